"""Response formatting utilities: oracle JSON extraction and read-view payloads."""

import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from ..models.report import Report
from ..models.status import HazardView

logger = logging.getLogger(__name__)


class ResponseFormatter:
    """
    Utility class for the two ends of the engine's JSON traffic.

    Provides methods for:
    - Extracting the JSON verdict from a model response
    - Shaping hazard views into the payloads served to map, navigation and
      civic consumers
    """

    @staticmethod
    def extract_json_from_response(response_text: str) -> Optional[Dict[str, Any]]:
        """
        Extract a JSON object from a model response.

        Tries, in order: markdown code blocks, the whole response, and the
        first complete JSON object embedded in surrounding text.

        Args:
            response_text: Raw response text that may contain JSON

        Returns:
            Parsed JSON dictionary, or None if no valid JSON object found
        """
        if not response_text or not response_text.strip():
            logger.warning("Empty response text provided")
            return None

        text = response_text.strip()

        for extractor in (
            ResponseFormatter._extract_markdown_json,
            ResponseFormatter._extract_raw_json,
            ResponseFormatter._extract_embedded_json,
        ):
            json_data = extractor(text)
            if isinstance(json_data, dict):
                return json_data

        logger.warning(f"Failed to extract JSON from response: {text[:200]}...")
        return None

    @staticmethod
    def _extract_markdown_json(text: str) -> Optional[Any]:
        patterns = [
            r'```json\s*\n(.*?)\n\s*```',
            r'```\s*\n(.*?)\n\s*```'
        ]

        for pattern in patterns:
            match = re.search(pattern, text, re.DOTALL)
            if match:
                try:
                    return json.loads(match.group(1).strip())
                except json.JSONDecodeError:
                    continue
        return None

    @staticmethod
    def _extract_raw_json(text: str) -> Optional[Any]:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            return None

    @staticmethod
    def _extract_embedded_json(text: str) -> Optional[Any]:
        """
        Find and extract a JSON object embedded in text using brace counting.

        Args:
            text: Response text

        Returns:
            Parsed JSON object or None
        """
        start_idx = text.find('{')
        while start_idx != -1:
            brace_count = 0
            in_string = False
            escape_next = False

            for i in range(start_idx, len(text)):
                char = text[i]
                if escape_next:
                    escape_next = False
                    continue
                if char == '\\':
                    escape_next = True
                    continue
                if char == '"':
                    in_string = not in_string
                    continue
                if in_string:
                    continue
                if char == '{':
                    brace_count += 1
                elif char == '}':
                    brace_count -= 1
                    if brace_count == 0:
                        try:
                            return json.loads(text[start_idx:i + 1])
                        except json.JSONDecodeError:
                            break

            start_idx = text.find('{', start_idx + 1)

        return None

    # Read-view payloads

    @staticmethod
    def report_payload(report: Report) -> Dict[str, Any]:
        return report.to_dict()

    @staticmethod
    def hazard_view_payload(view: HazardView) -> Dict[str, Any]:
        """Map/list entry: the hazard, its derived status and verification count."""
        return {
            "hazard": view.hazard.to_dict(),
            "status": view.status.to_dict(),
            "verification_count": view.verification_count,
        }

    @staticmethod
    def navigation_payload(view: HazardView) -> Dict[str, Any]:
        """Minimal entry for navigation apps routing around open hazards."""
        analysis = view.hazard.analysis or {}
        return {
            "lat": view.hazard.location.lat,
            "lng": view.hazard.location.lng,
            "severity": analysis.get("severity") or "Unknown",
            "type": analysis.get("hazard_type") or "hazard",
            "status": view.status.label(),
            "last_updated": view.hazard.timestamp,
        }

    @staticmethod
    def civic_payload(view: HazardView) -> Dict[str, Any]:
        """Entry for road authorities: location, address, cost estimate and status."""
        hazard = view.hazard
        analysis = hazard.analysis or {}
        repair_info = analysis.get("repair_info") if isinstance(analysis.get("repair_info"), dict) else {}
        return {
            "id": hazard.id,
            "location": hazard.location.to_dict(),
            "address": hazard.address_context.to_dict() if hazard.address_context else None,
            "severity": analysis.get("severity"),
            "cost_est": repair_info.get("estimated_cost_inr"),
            "status": view.status.label(),
            "verification_count": view.verification_count,
            "image": hazard.image_ref,
        }

    @staticmethod
    def group_by_region(views: Iterable[HazardView]) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        """
        Group hazards by state, then district, for the regional report list.

        Hazards without address metadata fall under "Unknown State" /
        "Unknown District". States and districts come back sorted.
        """
        grouped: Dict[str, Dict[str, List[Dict[str, Any]]]] = {}
        for view in views:
            address = view.hazard.address_context
            state = (address.state if address and address.state else None) or "Unknown State"
            district = (address.district if address and address.district else None) or "Unknown District"
            grouped.setdefault(state, {}).setdefault(district, []).append(
                ResponseFormatter.hazard_view_payload(view)
            )

        return {
            state: {district: grouped[state][district] for district in sorted(grouped[state])}
            for state in sorted(grouped)
        }
