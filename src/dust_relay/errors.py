"""Exceptions raised by the relay.

Only two conditions are exceptional: a request the relay refuses to start
(``InvalidRequest``) and an upstream call that did not succeed
(``UpstreamUnavailable``). Failed and timed-out runs are ordinary poll
outcomes and are reported as ``error`` events instead.
"""

PARSE_ERROR = -32700
INVALID_JSONRPC = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32000


class RelayError(Exception):
    code = INTERNAL_ERROR


class InvalidRequest(RelayError):
    code = INVALID_PARAMS


class UpstreamUnavailable(RelayError):
    pass
