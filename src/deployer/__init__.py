"""kpt v2 deployer.

Keeps a deployment unit's Kptfile consistent with the desired inventory
identity, then drives `kpt live apply` / `kpt live destroy` against it.
"""
