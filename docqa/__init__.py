"""Document question answering: upload text, ask questions, get grounded answers."""

__version__ = "0.1.0"
