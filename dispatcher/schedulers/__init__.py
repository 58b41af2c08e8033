from dispatcher.schedulers.base import Assignment, SelectionPolicy
from dispatcher.schedulers.round_robin import RoundRobinPolicy
from dispatcher.schedulers.least_loaded import LeastLoadedPolicy
from dispatcher.schedulers.resource_fit import ResourceFitPolicy
from dispatcher.schedulers.scheduler import Scheduler, build_policy

__all__ = [
    "Assignment", "SelectionPolicy", "RoundRobinPolicy", "LeastLoadedPolicy",
    "ResourceFitPolicy", "Scheduler", "build_policy",
]
