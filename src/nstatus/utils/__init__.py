"""Encrypted key record storage and Nostr relay I/O.

The utils layer sits in the middle of the diamond DAG, depending only on
[nstatus.models][nstatus.models]. It provides the low-level network and file
utilities used by [nstatus.services][nstatus.services].

Attributes:
    keys: Loading and saving the encrypted key record, and reading the
        previous client's ``config.json``.
    protocol: Per-relay clients, bounded concurrent fetching with signature
        verification, and publishing of signed events.

Note:
    The utils layer has **zero** imports from ``nstatus.core`` or
    ``nstatus.services``.

Examples:
    ```python
    from nstatus.utils.protocol import fetch_many
    from nstatus.utils.keys import KeyRecordConfig
    ```
"""
