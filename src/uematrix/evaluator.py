"""Classify finished phases from the artifacts they produced."""

import json
import logging
from pathlib import Path
from typing import IO

from uematrix.types import BuildStatus, EditorPlatform, UEVersion

logger = logging.getLogger(__name__)

Source = str | Path | IO[str] | IO[bytes]

_TEST_COUNTERS = ("succeeded", "succeededWithWarnings", "notRun")


def _read_json(source: Source):
    """Load JSON from a path or an open stream, ignoring a UTF-8 BOM."""
    if isinstance(source, (str, Path)):
        with open(source, encoding="utf-8-sig") as f:
            return json.load(f)

    data = source.read()
    if isinstance(data, bytes):
        data = data.decode("utf-8-sig")
    return json.loads(data.lstrip("\ufeff"))


class ResultEvaluator:
    """Turns test reports and plugin descriptors into phase statuses.

    Every check returns a BuildStatus and logs its reason; none of them raise.
    """

    def evaluate_test_results(
        self, source: Source, platform: EditorPlatform, version: UEVersion
    ) -> BuildStatus:
        """Read an automation report (index.json) and fail on any failed test."""
        label = f"[{version.full_version_string} {platform.value}]"
        try:
            report = _read_json(source)
        except FileNotFoundError:
            logger.error(f"{label} Test report not found: {source}")
            return BuildStatus.FAILED
        except (OSError, ValueError) as e:
            logger.error(f"{label} Could not parse test report: {e}")
            return BuildStatus.FAILED

        if not isinstance(report, dict) or not isinstance(report.get("failed"), int):
            logger.error(f"{label} Test report has no 'failed' count")
            return BuildStatus.FAILED

        counts = {key: report.get(key, 0) for key in _TEST_COUNTERS}
        failed = report["failed"]
        logger.info(
            f"{label} Tests: {counts['succeeded']} succeeded, "
            f"{counts['succeededWithWarnings']} with warnings, {failed} failed, "
            f"{counts['notRun']} not run ({report.get('totalDuration', 0)}s)"
        )
        return BuildStatus.from_bool(failed == 0)

    def evaluate_package_result(
        self, source: Source, platform: EditorPlatform, version: UEVersion
    ) -> BuildStatus:
        """Check that the packaged .uplugin was stamped with the target engine version."""
        label = f"[{version.full_version_string} {platform.value}]"
        expected = f"{version.version_string}.0"
        try:
            descriptor = _read_json(source)
        except FileNotFoundError:
            logger.error(f"{label} Packaged plugin descriptor not found: {source}")
            return BuildStatus.FAILED
        except (OSError, ValueError) as e:
            logger.error(f"{label} Could not parse plugin descriptor: {e}")
            return BuildStatus.FAILED

        engine_version = descriptor.get("EngineVersion") if isinstance(descriptor, dict) else None
        if engine_version is None:
            logger.error(f"{label} Plugin descriptor has no EngineVersion")
            return BuildStatus.FAILED
        if engine_version != expected:
            logger.error(f"{label} EngineVersion {engine_version} does not match {expected}")
            return BuildStatus.FAILED

        logger.info(f"{label} Plugin packaged for engine {engine_version}")
        return BuildStatus.SUCCESS

    def evaluate_project_package(self, package_dir: str | Path) -> BuildStatus:
        project_dir = Path(package_dir) / "Project"
        if not project_dir.is_dir():
            logger.error(f"Packaged project not found: {project_dir}")
            return BuildStatus.FAILED
        return BuildStatus.SUCCESS


def read_plugin_version_name(uplugin: Source, default: str = "0.0.0") -> str:
    """VersionName from a .uplugin descriptor."""
    try:
        descriptor = _read_json(uplugin)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read plugin version: {e}")
        return default
    if isinstance(descriptor, dict) and descriptor.get("VersionName"):
        return str(descriptor["VersionName"])
    return default
