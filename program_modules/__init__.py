"""
Program modules.

Each subpackage owns one business area: ORM models, frozen DTOs, the
service that owns the transaction boundary and the request handlers.

    programs -- member programs, their line items and finance record.
"""
