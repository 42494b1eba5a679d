"""Versioned API (v1). The aggregated router lives in `app.api.v1.routers`."""
