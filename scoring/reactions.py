"""
Reaction-weighted comment scoring.
A comment starts at a base score and each reaction made up to the cutoff adjusts it.
"""
from datetime import datetime
from typing import Dict, Iterable, Optional
import os

import yaml

from normalize.models import Reaction
from normalize.util import parse_timestamp

# filename used for weight YAML configuration
WEIGHTS_FILENAME = 'weights.yaml'

BASE_SCORE = 1.0
SCORE_FLOOR = -1.0
# used when reactions could not be fetched at all (not the same as "no reactions")
FALLBACK_SCORE = 1.0

DEFAULT_REACTION_WEIGHTS = {
    '+1': 2.0,
    '-1': -2.0,
    'heart': 0.5,
    'hooray': 0.5,
    'rocket': 0.5,
    'confused': -0.5,
    'eyes': -0.5,
}


def default_weights_path() -> str:
    return os.getenv('PRCHAMP_WEIGHTS') or os.path.join(os.path.dirname(os.path.dirname(__file__)), 'config', WEIGHTS_FILENAME)


def load_reaction_weights(path: Optional[str] = None) -> Dict[str, float]:
    """
    Load reaction weights from the `reactions` mapping of a YAML file, merged over the defaults.
    A missing file yields the defaults; a malformed file raises ValueError.
    """
    path = path or default_weights_path()
    weights = DEFAULT_REACTION_WEIGHTS.copy()
    if not os.path.exists(path):
        return weights
    try:
        with open(path, 'r', encoding='utf-8') as f:
            doc = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as ex:
        raise ValueError(f"Failed to load reaction weights from {path}: {ex}") from ex
    section = doc.get('reactions') if isinstance(doc, dict) else None
    if section is None:
        return weights
    if not isinstance(section, dict):
        raise ValueError(f"'reactions' in {path} must be a mapping")
    for content, value in section.items():
        try:
            weights[str(content)] = float(value)
        except (TypeError, ValueError) as ex:
            raise ValueError(f"Invalid weight for reaction '{content}' in {path}: {value!r}") from ex
    return weights


def score_comment(reactions: Optional[Iterable[Reaction]], cutoff: Optional[datetime], weights: Optional[Dict[str, float]] = None) -> float:
    """
    Score one comment from its reactions.

    Reactions created after `cutoff` are ignored; reactions without a creation time always count.
    Unknown reaction contents weigh 0. The result is clamped to SCORE_FLOOR with no upper bound.
    Passing None for reactions means they could not be fetched and yields FALLBACK_SCORE.
    """
    if reactions is None:
        return FALLBACK_SCORE
    weights = DEFAULT_REACTION_WEIGHTS if weights is None else weights
    cutoff = parse_timestamp(cutoff)
    score = BASE_SCORE
    for reaction in reactions:
        created = reaction.created_at
        if cutoff is not None and created is not None and parse_timestamp(created) > cutoff:
            continue
        score += weights.get(reaction.content, 0.0)
    return max(score, SCORE_FLOOR)
