"""mailinlet: poll a remote mailbox and turn new mail into application messages."""

__version__ = "0.1.0"
