"""AT Protocol client adapter: DPoP, XRPC transport, OAuth session restore."""
