def test_package_imports():
    import knowledge.context  # noqa: F401
    import knowledge.models  # noqa: F401
    import knowledge.services.knowledge_service  # noqa: F401
    import knowledge.services.sql_store  # noqa: F401
    import app.main  # noqa: F401


def test_app_routes_registered():
    from app.main import app

    paths = set(app.openapi()["paths"])
    assert "/health" in paths
    assert "/tenants/{tenant_id}/knowledge/query" in paths
    assert "/tenants/{tenant_id}/knowledge/{segment_id}" in paths
