"""
Console Test Harness for the Guided Flow Engine

Simple console loop to drive a flow before wiring a rendering layer.
Progress is saved under outputs/progress, so quitting and restarting
resumes the run.

Usage:
    python main.py [flow_id]
"""

import json
import logging
import sys

from guided_flow.core.flow_controller import FlowController
from guided_flow.core.flow_loader import available_flows, load_flow
from guided_flow.core.flow_submitter import FlowSubmitter
from guided_flow.persistence import JSONFileKeyValueStore, LocalRecordStore, ProgressPersistence
from guided_flow.results import (
    AdvisoryRequired,
    ExternalCallFailed,
    FlowCompleted,
    RedirectRequired,
    SubmissionAccepted,
)
from guided_flow.utils.display_helpers import build_progress_view, format_step_label

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


HELP = """Commands:
  set <key> <value>    set an answer (value parsed as JSON if possible)
  toggle <key> <tag>   add/remove a tag
  next | ack           advance (ack = acknowledge advisory)
  back                 retreat
  jump <stage|N>       jump to stage id or display position
  reset                abandon run and start over
  submit               submit a completed run
  quit                 leave (progress is kept)"""


class ConsoleIdentity:
    """Fixed identity for console runs"""

    def get_current_user(self):
        return "console-user"


def print_separator(char="=", length=60):
    """Print a separator line"""
    print(char * length)


def print_stage(controller):
    """Print current stage, progress and answers"""
    state = controller.state
    stage = controller.flow.get_stage(state.current_stage)
    view = build_progress_view(controller.gating, state)

    print_separator("-")
    print(f"{format_step_label(view)}  [{stage.id}] {stage.title}")
    if stage.fields:
        for key in stage.fields:
            value = state.answers.get(key)
            if isinstance(value, frozenset):
                value = sorted(value)
            print(f"  {key}: {value!r}")
    print(f"Can advance: {controller.can_advance()}")
    print_separator("-")


def parse_value(raw):
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def main():
    """Run console flow"""
    flow_id = sys.argv[1] if len(sys.argv) > 1 else "explore_journey"

    if flow_id not in available_flows():
        print(f"Unknown flow '{flow_id}'. Available: {', '.join(available_flows())}")
        return 1

    flow = load_flow(flow_id)
    persistence = ProgressPersistence(JSONFileKeyValueStore("outputs/progress"), flow)
    controller = FlowController(flow, persistence=persistence, identity=ConsoleIdentity())
    submitter = FlowSubmitter(flow, LocalRecordStore("outputs/records"), persistence=persistence)

    print_separator()
    print(f"GUIDED FLOW - {flow.title or flow.flow_id}")
    print_separator()

    started = controller.start()
    if isinstance(started, (RedirectRequired, ExternalCallFailed)):
        print(f"Cannot start flow: {started}")
        return 1

    if started.resumed:
        print("Resuming saved progress.")
    print(HELP)
    print_stage(controller)

    while True:
        try:
            line = input("> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nInterrupted (progress kept)")
            break

        if not line:
            continue

        parts = line.split(maxsplit=2)
        command = parts[0].lower()

        if command == "quit":
            break
        elif command == "set" and len(parts) == 3:
            result = controller.update_answer(parts[1], parse_value(parts[2]))
        elif command == "toggle" and len(parts) == 3:
            result = controller.toggle_tag(parts[1], parts[2])
        elif command in ("next", "ack"):
            result = controller.advance(acknowledge_advisory=(command == "ack"))
        elif command == "back":
            result = controller.retreat()
        elif command == "jump" and len(parts) == 2:
            target = parts[1]
            result = controller.jump_to_position(int(target)) if target.isdigit() else controller.jump_to(target)
        elif command == "reset":
            result = controller.reset()
        elif command == "submit":
            outcome = submitter.submit(controller.state, user_id=controller.user_id)
            if isinstance(outcome, SubmissionAccepted):
                print_separator()
                print("FLOW COMPLETE")
                print(f"  Record: {outcome.record_id}")
                print(f"  Next: {outcome.destination}")
                print_separator()
                break
            print(f"Submission failed: {outcome.reason}")
            continue
        else:
            print(HELP)
            continue

        if isinstance(result, AdvisoryRequired):
            print(f"\nAdvisory [{result.code}]: {result.message}")
            print("Type 'ack' to continue anyway.\n")
        elif isinstance(result, FlowCompleted):
            print("\nEnd of flow reached. Type 'submit' to finish.\n")
        elif not result.changed and result.reason:
            print(f"\nNot allowed: {result.reason}\n")
        else:
            print_stage(controller)

    print_separator()
    print("Console session complete")
    print_separator()
    return 0


if __name__ == '__main__':
    sys.exit(main())
