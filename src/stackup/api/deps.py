"""FastAPI dependencies for the status handlers."""

from typing import Annotated

from fastapi import Depends

from stackup.config import Settings, get_settings
from stackup.core.report import ReportAggregator


def get_settings_dependency() -> Settings:
    """Settings for the request; ``create_app`` overrides this with its own."""
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]


def get_aggregator(settings: SettingsDep) -> ReportAggregator:
    return ReportAggregator(settings.report.status_file, settings.report.resolved_json_file)


AggregatorDep = Annotated[ReportAggregator, Depends(get_aggregator)]
