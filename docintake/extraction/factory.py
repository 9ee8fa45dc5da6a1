from docintake.config.settings import Settings
from docintake.extraction.azure_adapter import AzureDocumentIntelligenceAdapter
from docintake.extraction.base import BaseExtractionProvider
from docintake.extraction.example_adapter import ExampleExtractionAdapter
from docintake.extraction.local_adapter import LocalExtractionAdapter
from docintake.extraction.openai_vision_adapter import OpenAIVisionAdapter


class ExtractionProviderFactory:
    """Creates the configured extraction provider adapter."""

    PROVIDERS = ("local", "azure", "openai", "example")

    @classmethod
    def create(cls, settings: Settings) -> BaseExtractionProvider:
        provider = settings.extraction_provider.lower()
        if provider == "local":
            return LocalExtractionAdapter()
        if provider == "example":
            return ExampleExtractionAdapter()
        if provider == "azure":
            return AzureDocumentIntelligenceAdapter(
                endpoint=settings.azure_di_endpoint,
                api_key=settings.azure_di_key,
                layout_model=settings.azure_di_layout_model,
                read_model=settings.azure_di_read_model,
            )
        if provider == "openai":
            return OpenAIVisionAdapter(
                api_key=settings.openai_api_key,
                model=settings.openai_model_name,
                timeout_seconds=settings.openai_timeout_seconds,
                base_url=settings.openai_base_url,
            )
        raise ValueError(
            f"Unknown extraction provider '{provider}'. Choose from: {list(cls.PROVIDERS)}"
        )
