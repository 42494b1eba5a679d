"""
Repository package for data access layers.

`entitlements` and `catalog` define the record types, the interfaces and
in-memory implementations; `sql` holds the SQLAlchemy ones. Either interface
can be swapped at runtime by pointing `ENTITLEMENT_REPOSITORY_IMPL` or
`CATALOG_REPOSITORY_IMPL` at a class, e.g.

    app.repositories.entitlements:MemoryEntitlementRepository
"""
