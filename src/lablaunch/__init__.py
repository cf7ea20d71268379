"""lablaunch: lab environment provisioning with a rotating MFA code display."""

__version__ = "0.1.0"
