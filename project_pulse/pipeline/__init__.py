"""
Refresh pipeline.

Stages (each opens its own connection and is bracketed by the process log):
    aggregate   — SignalRefreshStage    (signal_refresh)
    snapshot    — SnapshotStage         (snapshot_build)
    similarity  — SimilarityStage       (similarity_rebuild)
    forecast    — ForecastStage         (forecast_refresh)
    recommend   — RecommendationStage   (recommendation_refresh)

``orchestrator.RefreshOrchestrator`` runs them in that order per project.
"""
