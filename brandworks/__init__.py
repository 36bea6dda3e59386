"""Brand Me Now background platform: job queues, webhooks, agent hooks and credits."""

__version__ = "1.0.0"
