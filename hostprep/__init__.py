"""hostprep - unattended bootstrap and hardening for fresh Linux servers."""

APP_NAME = "Linux Bootstrap"
APP_SUBTITLE = "Server Setup & Hardening Utility"
VERSION = "1.0.0"

__version__ = VERSION
