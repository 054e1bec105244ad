"""VatWatch: VIES VAT number monitoring with Telegram notifications."""

__version__ = "0.1.0"
