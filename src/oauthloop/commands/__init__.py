"""Built-in CLI sub-commands for oauthloop.

* :mod:`~oauthloop.commands.login` -- run the browser login flow, or print
  an authorization URL without starting a listener.
* :mod:`~oauthloop.commands.discover` -- show the provider endpoints from
  the OpenID Connect discovery document.

Each module exports plain callback functions registered directly on the
root app in :func:`oauthloop.app.main`.
"""
