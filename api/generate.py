"""
Generation API endpoints
文本生成、流式生成与图像分析接口
"""

from typing import Any, Literal, Optional

from fastapi import APIRouter
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from llm_gateway.gateway import LLMGateway
from llm_gateway.routing import GenerateOptions, VisionGenerateOptions
from llm_gateway.types import CostTier, ProviderType, QualityTier, ResolutionRequirements


class RequirementsBody(BaseModel):
    needs_vision: bool = False
    needs_tools: bool = False
    preferred_cost: Optional[CostTier] = None
    preferred_quality: Optional[QualityTier] = None
    min_context_window: Optional[int] = None


class GenerateBody(BaseModel):
    feature_type: str
    prompt: Optional[str] = None
    messages: Optional[list[dict[str, Any]]] = None
    system: Optional[str] = None
    max_output_tokens: Optional[int] = Field(default=None, gt=0)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, gt=0, le=1)
    caller_id: Optional[str] = None
    provider_id: Optional[str] = None
    requirements: Optional[RequirementsBody] = None

    def to_options(self) -> GenerateOptions:
        requirements = (
            ResolutionRequirements(**self.requirements.model_dump()) if self.requirements else None
        )
        return GenerateOptions(
            feature_type=self.feature_type,
            prompt=self.prompt,
            messages=self.messages,
            system=self.system,
            max_output_tokens=self.max_output_tokens,
            temperature=self.temperature,
            top_p=self.top_p,
            caller_id=self.caller_id,
            provider_id=self.provider_id,
            requirements=requirements,
        )


class VisionBody(BaseModel):
    feature_type: str
    prompt: str
    image_base64: str
    mime_type: Literal["image/jpeg", "image/png", "image/gif", "image/webp"] = "image/jpeg"
    system: Optional[str] = None
    max_output_tokens: Optional[int] = Field(default=None, gt=0)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    top_p: Optional[float] = Field(default=None, gt=0, le=1)
    caller_id: Optional[str] = None
    provider_id: Optional[str] = None


def create_generate_router(gateway: LLMGateway) -> APIRouter:
    """创建生成相关的API路由"""

    router = APIRouter(prefix="/v1", tags=["generate"])

    @router.post("/generate")
    async def generate(body: GenerateBody):
        result = await gateway.router.generate(body.to_options())
        return {"success": True, "data": result.to_dict()}

    @router.post("/generate/stream")
    async def generate_stream(body: GenerateBody):
        """纯文本流式输出，Provider信息放在响应头中"""
        result = await gateway.router.generate_stream(body.to_options())
        headers = {"X-Provider": result.provider, "X-Model": result.model}
        if result.failover_from:
            headers["X-Failover-From"] = result.failover_from
        return StreamingResponse(result.chunks, media_type="text/plain; charset=utf-8", headers=headers)

    @router.post("/generate/vision")
    async def generate_vision(body: VisionBody):
        options = VisionGenerateOptions(**body.model_dump())
        result = await gateway.router.generate_with_vision(options)
        return {"success": True, "data": result.to_dict()}

    @router.post("/providers/{provider_type}/generate")
    async def generate_with_provider(provider_type: ProviderType, body: GenerateBody):
        """绕过功能映射，直接使用该类型的已启用Provider"""
        result = await gateway.router.generate_with_specific_provider(provider_type, body.to_options())
        return {"success": True, "data": result.to_dict()}

    @router.post("/providers/{provider_type}/generate/vision")
    async def generate_vision_with_provider(provider_type: ProviderType, body: VisionBody):
        options = VisionGenerateOptions(**body.model_dump())
        result = await gateway.router.generate_vision_with_specific_provider(provider_type, options)
        return {"success": True, "data": result.to_dict()}

    return router
