"""toastcast - scheduled weekly toasts synthesized from reflection notes."""

__version__ = "0.4.0"
