"""
Admin API endpoints
Provider、模型、功能映射、预算与用量的管理接口
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from llm_gateway.gateway import LLMGateway
from llm_gateway.services import period_start
from llm_gateway.types import (
    BudgetInput,
    BudgetPeriod,
    FeatureMappingInput,
    ModelInput,
    ModelUpdate,
    ProviderInput,
    ProviderUpdate,
)


def create_admin_router(gateway: LLMGateway) -> APIRouter:
    """创建管理相关的API路由"""

    router = APIRouter(prefix="/admin", tags=["admin"])
    registry = gateway.registry

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    @router.get("/providers")
    async def list_providers(enabled_only: bool = Query(False)):
        providers = await registry.list_providers(enabled_only=enabled_only)
        return {"success": True, "data": [p.model_dump(mode="json") for p in providers]}

    @router.post("/providers", status_code=201)
    async def register_provider(body: ProviderInput):
        info = await registry.register(body)
        return {"success": True, "data": info.model_dump(mode="json")}

    @router.get("/providers/{provider_id}")
    async def get_provider(provider_id: str):
        info = await registry.get(provider_id)
        if info is None:
            raise HTTPException(status_code=404, detail=f"Provider不存在: {provider_id}")
        return {"success": True, "data": info.model_dump(mode="json")}

    @router.patch("/providers/{provider_id}")
    async def update_provider(provider_id: str, body: ProviderUpdate):
        info = await registry.update(provider_id, body)
        return {"success": True, "data": info.model_dump(mode="json")}

    @router.delete("/providers/{provider_id}")
    async def remove_provider(provider_id: str):
        await registry.remove(provider_id)
        return {"success": True}

    @router.post("/providers/{provider_id}/validate")
    async def validate_provider(provider_id: str):
        result = await registry.validate(provider_id)
        return {
            "success": True,
            "data": {"is_valid": result.is_valid, "error": result.error, "details": result.details},
        }

    @router.post("/providers/{provider_id}/sync-models")
    async def sync_models(provider_id: str):
        result = await registry.sync_models(provider_id)
        return {
            "success": result.success,
            "data": {
                "models": [m.model_dump(mode="json") for m in result.models],
                "added": result.added,
                "removed": result.removed,
                "error": result.error,
            },
        }

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    @router.post("/models", status_code=201)
    async def add_model(body: ModelInput):
        model = await registry.add_model(body)
        return {"success": True, "data": model.model_dump(mode="json")}

    @router.patch("/models/{model_id}")
    async def update_model(model_id: str, body: ModelUpdate):
        model = await registry.update_model(model_id, body)
        return {"success": True, "data": model.model_dump(mode="json")}

    @router.delete("/models/{model_id}")
    async def remove_model(model_id: str):
        await registry.remove_model(model_id)
        return {"success": True}

    # ------------------------------------------------------------------
    # Feature mappings
    # ------------------------------------------------------------------

    @router.get("/mappings")
    async def list_mappings(feature_type: Optional[str] = Query(None)):
        mappings = await gateway.resolver.get_mappings(feature_type)
        return {"success": True, "data": [m.model_dump(mode="json") for m in mappings]}

    @router.put("/mappings")
    async def upsert_mapping(body: FeatureMappingInput):
        mapping = await gateway.resolver.create_or_update_mapping(body)
        return {"success": True, "data": mapping.model_dump(mode="json")}

    @router.delete("/mappings/{mapping_id}")
    async def delete_mapping(mapping_id: str):
        if not await gateway.resolver.delete_mapping(mapping_id):
            raise HTTPException(status_code=404, detail=f"映射规则不存在: {mapping_id}")
        return {"success": True}

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    @router.get("/budgets")
    async def list_budgets():
        configs = await gateway.budget.get_all_budget_configs()
        return {"success": True, "data": [c.model_dump(mode="json") for c in configs]}

    @router.put("/budgets")
    async def save_budget(body: BudgetInput):
        config = await gateway.budget.save_budget_config(body)
        return {"success": True, "data": config.model_dump(mode="json")}

    @router.get("/budgets/summary")
    async def budget_summary():
        return {"success": True, "data": await gateway.budget.get_budget_summary()}

    @router.post("/budgets/{period}/reset")
    async def reset_budget_alert(period: BudgetPeriod):
        await gateway.budget.reset_budget_alert_status(period)
        return {"success": True}

    @router.get("/routing/decision")
    async def routing_decision(feature_type: str = Query("general_chat")):
        """按成本排序已启用的Provider类型，并附带最短周期的预算告警"""
        enabled_types = await registry.list_enabled_provider_types()
        allowed = await gateway.budget.filter_by_budget(enabled_types)
        decision = await gateway.budget.get_smart_routing_decision(allowed, feature_type)
        return {"success": True, "data": decision.to_dict()}

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    @router.get("/usage")
    async def usage_stats(
        start: Optional[datetime] = Query(None, description="起始时间，默认本月1日"),
        end: Optional[datetime] = Query(None),
        provider: Optional[str] = Query(None),
        feature_type: Optional[str] = Query(None),
        caller_id: Optional[str] = Query(None),
    ):
        start = start or period_start(BudgetPeriod.MONTHLY)
        stats = await gateway.usage_tracker.get_usage_stats(start, end, provider, feature_type, caller_id)
        by_provider = await gateway.usage_tracker.get_usage_by_provider(start, end)
        by_feature = await gateway.usage_tracker.get_usage_by_feature(start, end)
        return {
            "success": True,
            "data": {
                "start": start.isoformat(),
                "end": end.isoformat() if end else None,
                "total": stats.to_dict(),
                "by_provider": {k: v.to_dict() for k, v in by_provider.items()},
                "by_feature": {k: v.to_dict() for k, v in by_feature.items()},
            },
        }

    @router.get("/usage/monthly")
    async def monthly_usage(
        year: int = Query(..., ge=2000),
        month: Optional[int] = Query(None, ge=1, le=12),
    ):
        aggregations = await gateway.aggregation.get_monthly_aggregations(year, month)
        data = {"aggregations": aggregations}
        if month is None:
            data["trend"] = await gateway.aggregation.get_yearly_cost_trend(year)
        else:
            data["total_cost_usd"] = await gateway.aggregation.get_monthly_total_cost(year, month)
        return {"success": True, "data": data}

    @router.get("/tasks")
    async def task_status():
        return {"success": True, "data": gateway.scheduler.get_task_status()}

    return router
