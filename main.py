"""
Command-line entry point for the resource optimization engine
"""
import json
import argparse
import logging
import os
from pathlib import Path
from typing import Dict, Any

from rich.logging import RichHandler

from resource_engine.config import EngineSettings
from resource_engine.engine import OptimizationEngine
from resource_engine.exceptions import OptimizationError
from resource_engine.models.data_models import OptimizationRequest, ProjectSnapshot, HOURS_PER_DAY
from resource_engine.models.results import OptimizationResult
from resource_engine.providers.snapshot_provider import InMemorySnapshotProvider

logger = logging.getLogger("main")


def print_plan_summary(title: str, plan: Dict[str, Any]):
    """Print formatted plan summary"""
    print(f"\n  [{title}]")
    print(f"    Duration: {plan['total_duration_days']:.1f} days ({plan['total_duration_hours']:.1f} h)")
    print(f"    Cost: ${plan['total_cost']:,.2f}")
    print(f"    Critical Path: {' -> '.join(plan['critical_path']) or '-'}")
    if plan['unscheduled_task_ids']:
        print(f"    Unscheduled: {', '.join(plan['unscheduled_task_ids'])}")


def print_schedule_details(plan: Dict[str, Any]):
    """Print per-task schedule"""
    print("\n    Schedule Details:")
    print("    " + "-" * 78)
    print(f"    {'Task':<24} {'Resource':<16} {'Start':>8} {'End':>8} {'Slack':>7} {'Cost':>10}")
    print("    " + "-" * 78)

    for task in plan['tasks']:
        name = task['task_name']
        task_display = name[:22] + '..' if len(name) > 24 else name
        marker = '*' if task['is_critical'] else ' '
        print(
            f"    {task_display:<24} {task['resource_id']:<16} {task['start']:>8.1f} "
            f"{task['end']:>8.1f} {task['slack']:>7.1f} ${task['estimated_cost']:>9,.0f}{marker}"
        )

    print("    " + "-" * 78)
    print("    * critical path task; times in hours from horizon start")


def print_result(result: OptimizationResult):
    data = result.to_dict()
    print(f"\n[Result] Status: {data['status'].upper()} | Confidence: {data['confidence_score']:.0%}")
    print(f"  Generations: {data['generations_run']}"
          + (f" (converged at {data['convergence_generation']})" if data['convergence_generation'] else ""))

    if data['scheduling_plan']:
        print_plan_summary("Recommended Plan", data['scheduling_plan'])
        print_schedule_details(data['scheduling_plan'])

        metrics = data['metrics']
        print("\n[Metrics vs. first-fit baseline]")
        print(f"  - Cost savings: ${metrics['cost_savings']:,.2f} ({metrics['cost_savings_percentage']:.1f}%)")
        print(f"  - Time savings: {metrics['time_savings'] / HOURS_PER_DAY:.1f} days "
              f"({metrics['time_savings_percentage']:.1f}%)")
        print(f"  - Average utilization: {metrics['resource_utilization_avg']:.1f}%")
        print(f"  - Feasibility: {metrics['feasibility_score']:.2f} | Robustness: {metrics['robustness_score']:.2f}")

    for alternative in data['alternatives']:
        print_plan_summary(alternative['scenario_name'], alternative['plan'])
        if alternative['pros']:
            print(f"    Pros: {', '.join(alternative['pros'])}")
        if alternative['cons']:
            print(f"    Cons: {', '.join(alternative['cons'])}")

    if data['warnings']:
        print(f"\n[Warnings] {len(data['warnings'])}")
        for warning in data['warnings']:
            print(f"  - [{warning['severity']}] {warning['category']}: {warning['message']}")


def run_optimization(json_file_path: str, seed: int = None) -> Dict[str, Any]:
    """
    Run the engine on an example file

    Args:
        json_file_path: JSON file with a "snapshot" and a "request" section
        seed: Overrides the request seed
    """
    print("\n" + "=" * 80)
    print("  RESOURCE OPTIMIZATION & SCHEDULING ENGINE")
    print("=" * 80)

    logger.info("Loading project data from %s", json_file_path)
    with open(json_file_path, 'r') as f:
        data = json.load(f)

    settings = EngineSettings.from_env()
    request_data = dict(data['request'])
    if seed is not None:
        request_data['seed'] = seed
    request = OptimizationRequest.from_json(request_data, settings.ga_config)
    snapshot = ProjectSnapshot.from_json(data['snapshot'])

    print(f"\n[Request {request.request_id}]")
    print(f"  - Objective: {request.objective.value}")
    print(f"  - Tasks: {len(snapshot.tasks)}")
    print(f"  - Resources: {len(snapshot.resources)}")
    print(f"  - Horizon: {request.horizon.start:%Y-%m-%d} to {request.horizon.end:%Y-%m-%d}")

    engine = OptimizationEngine(InMemorySnapshotProvider(snapshot), settings)
    result = engine.optimize(request)
    print_result(result)

    report = result.to_dict(horizon_start=request.horizon.start)
    output_dir = Path("output")
    output_dir.mkdir(exist_ok=True)
    report_file = output_dir / "optimization_result.json"
    with open(report_file, 'w') as f:
        json.dump(report, f, indent=2)

    print(f"\n[Saved] Full result to: {report_file}")
    print("\n" + "=" * 80)
    return report


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Resource optimization and critical-path scheduling for construction projects"
    )
    parser.add_argument(
        "json_file",
        nargs='?',
        default="example/bridge_project.json",
        help="Path to JSON file with snapshot and request (default: example/bridge_project.json)"
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed for a reproducible run")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log per-generation progress")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)]
    )

    if not os.path.exists(args.json_file):
        logger.error("File '%s' not found!", args.json_file)
        return 1

    try:
        run_optimization(args.json_file, seed=args.seed)
    except OptimizationError as e:
        logger.error("Optimization rejected: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
