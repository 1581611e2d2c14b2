"""PushDrop token encoding, derived-key payments and chain scanning for BSV crowdfunding."""

__version__ = "0.1.0"
