import copy
import logging
from typing import Any, Dict, Tuple

logger = logging.getLogger(__name__)

ARRAY_REPLACE = 'replace'
ARRAY_CONCAT = 'concat'
ARRAY_MERGE_POLICIES = (ARRAY_REPLACE, ARRAY_CONCAT)

# overlay keys ending with this marker append to the base list
ADDITIVE_MARKER = '+'

_PREVIEW_LEN = 80


def _preview(value: Any) -> str:
    text = repr(value)
    return text if len(text) <= _PREVIEW_LEN else text[:_PREVIEW_LEN] + '...'


class ConfigMerger:
    """
    Deep overlay of one configuration mapping onto another.

    - Mappings present on both sides merge key by key, recursively.
    - Lists are replaced by the overlay unless the policy is ``concat``.
    - An overlay key such as ``plugins+`` holding a list appends to ``plugins``
      whatever the policy.
    - Anything else in the overlay replaces the base value.

    Inputs are never mutated; the result shares no containers with them.
    """

    @staticmethod
    def merge(
        base: Dict[str, Any],
        overlay: Dict[str, Any],
        context_description: str = 'ConfigMerge',
        array_merge: str = ARRAY_REPLACE,
    ) -> Dict[str, Any]:
        if array_merge not in ARRAY_MERGE_POLICIES:
            raise ValueError(f"[{context_description}] Unknown array merge policy '{array_merge}'")

        if not isinstance(overlay, dict):
            logger.warning('[%s] Overlay is a %s, not a mapping - keeping base',
                           context_description, type(overlay).__name__)
            return copy.deepcopy(base) if isinstance(base, dict) else {}
        if not isinstance(base, dict):
            logger.warning('[%s] Base is a %s, not a mapping - taking overlay',
                           context_description, type(base).__name__)
            base = {}

        result = copy.deepcopy(base)
        for raw_key, value in overlay.items():
            key, additive = ConfigMerger._split_additive(raw_key, value)
            path = f'{context_description}.{key}'
            if key in result:
                result[key] = ConfigMerger._merge_value(result[key], value, path, array_merge, additive)
            else:
                result[key] = copy.deepcopy(value)
                logger.debug('[%s] added: %s', path, _preview(value))
        return result

    @staticmethod
    def _merge_value(current: Any, incoming: Any, path: str, array_merge: str, additive: bool) -> Any:
        if isinstance(current, dict) and isinstance(incoming, dict):
            return ConfigMerger.merge(current, incoming, path, array_merge)

        if isinstance(current, list) and isinstance(incoming, list) and (additive or array_merge == ARRAY_CONCAT):
            logger.debug('[%s] appended %d item(s)', path, len(incoming))
            return current + copy.deepcopy(incoming)

        if current != incoming:
            logger.debug('[%s] replaced: %s -> %s', path, _preview(current), _preview(incoming))
        return copy.deepcopy(incoming)

    @staticmethod
    def _split_additive(key: Any, value: Any) -> Tuple[Any, bool]:
        if isinstance(key, str) and len(key) > 1 and key.endswith(ADDITIVE_MARKER) and isinstance(value, list):
            return key[:-1], True
        return key, False


def merge_configs(
    base: Dict[str, Any],
    *overlays: Dict[str, Any],
    context: str = 'ConfigChain',
    array_merge: str = ARRAY_REPLACE,
) -> Dict[str, Any]:
    """Apply ``overlays`` left to right over ``base``."""
    result = base
    for step, overlay in enumerate(overlays, start=1):
        result = ConfigMerger.merge(result, overlay, f'{context}[{step}]', array_merge)
    return result
