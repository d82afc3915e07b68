"""
lmchat: chat with language models of different providers through a
chain of advisors, with tool calling.

The settings of the package are read from config.toml in the working
directory, if present; a default file may be written with
lmchat.config.create_default_config_file().
"""

# pyright: reportUnusedImport=false
# flake8: noqa

from .client import ChatClient
