"""
Transformer from the external project-management payload to the internal snapshot format
"""
from typing import Dict, List, Any

from resource_engine.models.data_models import TimeHorizon, HOURS_PER_DAY, parse_datetime


SKILL_LEVELS = {
    'beginner': 1,
    'intermediate': 2,
    'advanced': 3,
    'expert': 4,
}

# External resource types map onto the three resource kinds
RESOURCE_TYPES = {
    'human': 'worker',
    'worker': 'worker',
    'equipment': 'equipment',
    'material': 'material',
}


def _hours(value: str, horizon: TimeHorizon) -> float:
    return horizon.to_hours(parse_datetime(value))


def _skill(data: Any) -> Dict[str, Any]:
    if isinstance(data, str):
        return {"name": data, "level": 1}
    level = data.get('level', 1)
    if isinstance(level, str):
        level = SKILL_LEVELS.get(level, 1)
    return {"name": data.get('skillName', data.get('name')), "level": int(level)}


def transform_external_snapshot(payload: Dict, horizon: TimeHorizon) -> Dict:
    """
    Transform an external snapshot payload to the internal snapshot format

    Args:
        payload: External payload with camelCase tasks, resources and allocations
        horizon: Request horizon; external dates become hours from its start

    Returns:
        Dict: Internal format accepted by ProjectSnapshot.from_json
    """
    tasks = []
    for task_data in payload.get('tasks', []):
        # Durations arrive either as hours or as working days
        if 'estimatedHours' in task_data:
            duration_hours = float(task_data['estimatedHours'])
        else:
            duration_hours = float(task_data['estimatedDays']) * HOURS_PER_DAY

        dependencies = []
        for dep in task_data.get('dependencies', []):
            if isinstance(dep, str):
                dependencies.append(dep)
            else:
                dependencies.append({
                    "predecessor_id": dep['taskId'],
                    "type": dep.get('type', 'finish_to_start'),
                    "lag_hours": float(dep.get('lagHours', 0.0))
                })

        tasks.append({
            "id": task_data['id'],
            "name": task_data.get('title', task_data['id']),
            "description": task_data.get('description', ''),
            "project_id": task_data.get('projectId', ''),
            "duration_hours": duration_hours,
            "required_skills": [_skill(s) for s in task_data.get('requiredSkills', [])],
            "complexity": int(task_data.get('complexity', 5)),
            "resource_type": RESOURCE_TYPES.get(task_data.get('resourceType', ''), None),
            "dependencies": dependencies
        })

    resources = []
    for resource_data in payload.get('resources', []):
        if 'costPerHour' in resource_data:
            hourly_rate = float(resource_data['costPerHour'])
        else:
            hourly_rate = float(resource_data.get('costPerDay', 0.0)) / HOURS_PER_DAY

        availability = []
        for slot in resource_data.get('availability', []):
            start = max(_hours(slot['startDate'], horizon), 0.0)
            end = min(_hours(slot['endDate'], horizon), horizon.length_hours)
            if end > start:
                availability.append({
                    "start": start,
                    "end": end,
                    "percentage": float(slot.get('percentage', 100.0))
                })

        resources.append({
            "id": resource_data['id'],
            "name": resource_data.get('name', resource_data['id']),
            "type": RESOURCE_TYPES.get(resource_data.get('type', 'worker'), 'worker'),
            "skills": [_skill(s) for s in resource_data.get('skills', [])],
            "hourly_rate": hourly_rate,
            "availability": sorted(availability, key=lambda w: w['start'])
        })

    allocations = []
    for allocation_data in payload.get('allocations', []):
        if allocation_data.get('status') in ('completed', 'cancelled'):
            continue
        allocations.append({
            "allocation_id": allocation_data.get('allocationId', ''),
            "resource_id": allocation_data['resourceId'],
            "task_id": allocation_data.get('taskId', ''),
            "project_id": allocation_data.get('projectId', ''),
            "start": _hours(allocation_data['startDate'], horizon),
            "end": _hours(allocation_data['endDate'], horizon),
            "allocation_percentage": float(allocation_data.get('allocationPercentage', 100.0)),
            "estimated_cost": float(allocation_data.get('estimatedCost', 0.0))
        })

    utilization_history = [
        {
            "timestamp": sample['date'],
            "resource_type": RESOURCE_TYPES.get(sample['resourceType'], sample['resourceType']),
            "quantity": float(sample['quantity'])
        }
        for sample in payload.get('utilizationHistory', [])
    ]

    return {
        "tasks": tasks,
        "resources": resources,
        "allocations": allocations,
        "utilization_history": utilization_history
    }


def validate_snapshot_data(payload: Dict) -> List[str]:
    """
    Validate that an external payload has the fields the transformer reads

    Args:
        payload: External snapshot payload

    Returns:
        List[str]: Missing or malformed fields; empty when the payload is usable
    """
    problems = []
    if not isinstance(payload.get('tasks'), list):
        problems.append("tasks")
    if not isinstance(payload.get('resources'), list):
        problems.append("resources")
    if problems:
        return problems

    for index, task in enumerate(payload['tasks']):
        if 'id' not in task:
            problems.append(f"tasks[{index}].id")
        if 'estimatedHours' not in task and 'estimatedDays' not in task:
            problems.append(f"tasks[{index}].estimatedHours")

    for index, resource in enumerate(payload['resources']):
        if 'id' not in resource:
            problems.append(f"resources[{index}].id")
        for slot_index, slot in enumerate(resource.get('availability', [])):
            for field in ('startDate', 'endDate'):
                if field not in slot:
                    problems.append(f"resources[{index}].availability[{slot_index}].{field}")

    for index, allocation in enumerate(payload.get('allocations', [])):
        for field in ('resourceId', 'startDate', 'endDate'):
            if field not in allocation:
                problems.append(f"allocations[{index}].{field}")

    return problems


def get_snapshot_summary(payload: Dict) -> Dict:
    """
    Get summary of an external snapshot payload

    Args:
        payload: External snapshot payload

    Returns:
        Dict: Counts and totals for logging
    """
    tasks = payload.get('tasks', [])
    total_hours = sum(
        float(t['estimatedHours']) if 'estimatedHours' in t else float(t.get('estimatedDays', 0)) * HOURS_PER_DAY
        for t in tasks
    )
    resource_types: Dict[str, int] = {}
    for resource in payload.get('resources', []):
        kind = RESOURCE_TYPES.get(resource.get('type', 'worker'), 'worker')
        resource_types[kind] = resource_types.get(kind, 0) + 1

    return {
        "total_tasks": len(tasks),
        "total_duration_hours": total_hours,
        "total_duration_days": total_hours / HOURS_PER_DAY,
        "projects": sorted({t.get('projectId', '') for t in tasks}),
        "resources_by_type": resource_types,
        "committed_allocations": len(payload.get('allocations', [])),
        "history_samples": len(payload.get('utilizationHistory', []))
    }
