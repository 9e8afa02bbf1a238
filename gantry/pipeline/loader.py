"""Pipeline loader and validator.

Loads pipeline definitions from YAML files, validates them,
and provides access to preset and custom pipelines.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional
from pydantic import ValidationError

from gantry.config_loader import ConfigLoader
from gantry.pipeline.schema import PipelineConfig, StepKind

PRESETS_DIR = Path(__file__).parent.parent.parent / "config" / "pipelines"


class PipelineLoader:
    """Load and validate pipeline definitions."""

    def __init__(self, presets_dir: Optional[Path] = None):
        """
        Initialize pipeline loader.

        Args:
            presets_dir: Directory holding preset YAML files
        """
        self.presets_dir = presets_dir or PRESETS_DIR
        self._preset_cache: Dict[str, PipelineConfig] = {}

    def load_from_yaml(self, yaml_path: Path) -> PipelineConfig:
        """
        Load pipeline from YAML file.

        Args:
            yaml_path: Path to YAML file

        Returns:
            Validated PipelineConfig

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If pipeline is invalid
            yaml.YAMLError: If YAML is malformed
        """
        raw_config = ConfigLoader.load_yaml(Path(yaml_path))
        if not isinstance(raw_config, dict):
            raise ValueError(f"Pipeline file {yaml_path} must contain a mapping")

        try:
            return PipelineConfig(**raw_config)
        except ValidationError as e:
            raise ValueError(f"Invalid pipeline configuration in {yaml_path}: {e}") from e

    def load_preset(self, preset_name: str) -> PipelineConfig:
        """
        Load a preset pipeline by name.

        Args:
            preset_name: Name of preset pipeline (e.g., 'default', 'dry_run')

        Returns:
            PipelineConfig

        Raises:
            FileNotFoundError: If preset doesn't exist
        """
        if preset_name in self._preset_cache:
            return self._preset_cache[preset_name]

        preset_path = self.presets_dir / f"{preset_name}.yaml"

        pipeline = self.load_from_yaml(preset_path)
        pipeline.is_preset = True

        self._preset_cache[preset_name] = pipeline

        return pipeline

    def list_presets(self) -> List[str]:
        """
        List available preset pipelines.

        Returns:
            List of preset names
        """
        if not self.presets_dir.exists():
            return []

        return sorted(yaml_file.stem for yaml_file in self.presets_dir.glob("*.yaml"))

    def load_from_dict(self, config_dict: Dict) -> PipelineConfig:
        """
        Load pipeline from dictionary (for API requests).

        Raises:
            ValueError: If pipeline is invalid
        """
        try:
            return PipelineConfig(**ConfigLoader.resolve_env_vars(config_dict))
        except ValidationError as e:
            raise ValueError(f"Invalid pipeline configuration: {e}") from e

    def validate_pipeline(
        self,
        pipeline: PipelineConfig,
        registered_ids: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """
        Validate pipeline and return list of warnings/issues.

        Args:
            pipeline: Pipeline to validate
            registered_ids: Known collaborator IDs (skips the check when None)

        Returns:
            List of warning messages (empty if no issues)
        """
        warnings = []

        if registered_ids is not None:
            known = set(registered_ids)
            for collaborator_id in pipeline.collaborator_ids():
                if collaborator_id not in known:
                    warnings.append(f"Collaborator '{collaborator_id}' is not registered")

        image_built = False
        for stage in pipeline.stages:
            for step in stage.steps:
                if step.kind == StepKind.BUILD:
                    image_built = True
                if step.kind in (StepKind.PUSH, StepKind.DEPLOY) and not step.target and not image_built:
                    warnings.append(
                        f"Stage '{stage.name}': {step.kind.value} step has no target and no earlier build step"
                    )
                if step.kind.is_gate and not stage.hard:
                    warnings.append(
                        f"Stage '{stage.name}' is soft but contains a {step.kind.value} gate (gate failures always abort)"
                    )

        if not pipeline.post:
            warnings.append("Pipeline has no completion hooks")

        return warnings


class PipelineRegistry:
    """Registry for managing preset and custom pipelines."""

    def __init__(self, loader: Optional[PipelineLoader] = None):
        self.loader = loader or PipelineLoader()
        self._custom_pipelines: Dict[str, PipelineConfig] = {}

    def get_pipeline(self, name: str, is_preset: bool = True) -> Optional[PipelineConfig]:
        """
        Get pipeline by name.

        Args:
            name: Pipeline name
            is_preset: Whether to look in presets (True) or custom (False)

        Returns:
            PipelineConfig or None if not found
        """
        if not is_preset:
            return self._custom_pipelines.get(name)
        try:
            return self.loader.load_preset(name)
        except FileNotFoundError:
            return None

    def find(self, name: str) -> Optional[PipelineConfig]:
        """Custom pipelines first, then presets."""
        return self._custom_pipelines.get(name) or self.get_pipeline(name)

    def register_custom(self, name: str, pipeline: PipelineConfig):
        """Register a custom pipeline."""
        pipeline.is_preset = False
        self._custom_pipelines[name] = pipeline

    def list_all(self) -> Dict[str, List[str]]:
        """
        List all available pipelines.

        Returns:
            Dict with 'presets' and 'custom' keys containing pipeline names
        """
        return {
            "presets": self.loader.list_presets(),
            "custom": list(self._custom_pipelines.keys()),
        }
