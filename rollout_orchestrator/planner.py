import heapq

from .errors import CycleError, DuplicateNodeError, UnknownDependencyError
from .logger import get_logger
from .models import RolloutPlan


class RolloutPlanner:
    """Orders nodes so that every node comes after all of its dependencies.

    Only reads the declared dependency graph; node state is never touched.
    """

    def __init__(self):
        self.logger = get_logger("planner")

    @staticmethod
    def validate(nodes):
        """Check names are unique and every dependency is declared"""
        names = set()
        for node in nodes:
            if node.name in names:
                raise DuplicateNodeError(node.name)
            names.add(node.name)

        for node in nodes:
            for dep in node.depends_on:
                if dep not in names:
                    raise UnknownDependencyError(node.name, dep)

    def plan(self, nodes):
        """Kahn's algorithm; ties go to the node declared first"""
        nodes = list(nodes)
        self.validate(nodes)

        index = {node.name: i for i, node in enumerate(nodes)}
        unresolved = {node.name: len(node.depends_on) for node in nodes}
        dependents = {node.name: [] for node in nodes}
        for node in nodes:
            for dep in node.depends_on:
                dependents[dep].append(node.name)

        ready = [index[name] for name, count in unresolved.items() if count == 0]
        heapq.heapify(ready)

        order = []
        while ready:
            name = nodes[heapq.heappop(ready)].name
            order.append(name)
            for child in dependents[name]:
                unresolved[child] -= 1
                if unresolved[child] == 0:
                    heapq.heappush(ready, index[child])

        if len(order) < len(nodes):
            blocked = [node for node in nodes if unresolved[node.name] > 0]
            members = self._find_cycle(blocked)
            self.logger.error(f"Dependency cycle detected: {' -> '.join(members + members[:1])}")
            raise CycleError(members)

        self.logger.debug(f"Planned rollout order: {order}")
        return RolloutPlan(tuple(order))

    @staticmethod
    def _find_cycle(blocked):
        """Walk unresolved dependencies until a node repeats.

        Every blocked node has at least one blocked dependency, so the walk
        always closes a loop.
        """
        by_name = {node.name: node for node in blocked}
        position = {node.name: i for i, node in enumerate(blocked)}

        path = []
        seen = {}
        current = blocked[0].name
        while current not in seen:
            seen[current] = len(path)
            path.append(current)
            current = next(dep for dep in by_name[current].depends_on if dep in by_name)

        cycle = path[seen[current]:]
        # start from whichever member was declared first
        first = min(range(len(cycle)), key=lambda i: position[cycle[i]])
        return cycle[first:] + cycle[:first]

    def tiers(self, nodes):
        """Group planned nodes by dependency depth"""
        nodes = list(nodes)
        plan = self.plan(nodes)
        by_name = {node.name: node for node in nodes}

        depth = {}
        for name in plan:
            deps = by_name[name].depends_on
            depth[name] = 1 + max(depth[d] for d in deps) if deps else 0

        tiers = []
        for name in plan:
            while len(tiers) <= depth[name]:
                tiers.append([])
            tiers[depth[name]].append(name)
        return tiers
