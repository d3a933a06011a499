"""recall: hybrid semantic + keyword search over an agent's markdown memory."""

__version__ = "0.1.0"
