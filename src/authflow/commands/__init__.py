"""Built-in CLI sub-commands for authflow.

* :mod:`~authflow.commands.token` -- obtain, show and delete cached tokens,
  clear the embedded browser session, and print PKCE pairs.

Each command is a plain callback function registered directly on the root
app in :mod:`authflow.app`.
"""
