"""
Display Helpers - Convert flow run state to progress indicator views

Used by the web app and console harness to render "step N of M" and
stage menus. Pure projections; nothing here changes state.
"""

from typing import Any, Dict, List

from guided_flow.commands import FlowRunState
from guided_flow.core.gating_policy import GatingPolicy


STATUS_CURRENT = 'current'
STATUS_COMPLETE = 'complete'
STATUS_ACCESSIBLE = 'accessible'
STATUS_LOCKED = 'locked'


def build_progress_view(gating: GatingPolicy, state: FlowRunState) -> Dict[str, Any]:
    """
    Progress indicator view over the effective sequence.

    Returns:
        dict with keys:
            position: 1-based display position of the current stage
            total: number of effective stages
            percent: rounded completion percentage
            stages: list of {id, title, group, position, status}
    """
    sequencer = gating.sequencer
    sequence = sequencer.effective_sequence(state.answers)
    position = sequencer.logical_to_display(sequence, state.current_stage) or 1
    total = len(sequence)
    current_ordinal = sequencer.ordinal_of(state.current_stage)

    stages = []
    for index, stage in enumerate(sequence, start=1):
        if stage.id == state.current_stage:
            status = STATUS_CURRENT
        elif stage.ordinal < current_ordinal:
            status = STATUS_COMPLETE
        elif gating.can_navigate_to(stage.id, state.high_water_mark, state.answers):
            status = STATUS_ACCESSIBLE
        else:
            status = STATUS_LOCKED

        stages.append({
            'id': stage.id,
            'title': stage.title,
            'group': stage.group,
            'position': index,
            'status': status,
        })

    return {
        'position': position,
        'total': total,
        'percent': round(position / total * 100) if total else 0,
        'stages': stages,
    }


def group_stages(view: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Group a progress view's stages by their group label (chapter menu).

    Groups keep first-appearance order; stages without a group are
    collected under None.
    """
    groups: List[Dict[str, Any]] = []
    index = {}

    for stage in view['stages']:
        label = stage['group']
        if label not in index:
            index[label] = len(groups)
            groups.append({'group': label, 'stages': []})
        groups[index[label]]['stages'].append(stage)

    return groups


def format_step_label(view: Dict[str, Any]) -> str:
    """
    Examples:
        >>> format_step_label({'position': 2, 'total': 7, 'percent': 29})
        'Step 2 of 7 (29% complete)'
    """
    return f"Step {view['position']} of {view['total']} ({view['percent']}% complete)"
