"""
BaseScore — Trust Propagation Engine (EigenTrust)

Computes relative, convergent trust over a directed weighted trust graph.

    1. Every node starts at 1/N.
    2. Local trust c_ij keeps only positive outgoing trust (trust * weight),
       row-normalized so each node's outgoing positive trust sums to 1.
    3. t_i = sum(c_ji * t_j) over incoming edges, at most 100 iterations.
    4. Stop once the largest per-node change drops below 0.0001.
    5. Re-normalize so the final scores sum to 1.

Reference: Kamvar, Schlosser, Garcia-Molina,
"The EigenTrust Algorithm for Reputation Management in P2P Networks".

Pure CPU work, no I/O. The iteration cap bounds latency on pathological graphs.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence, Tuple

import structlog

from basescore.trust.engine import round_half_up

logger = structlog.get_logger()

MAX_ITERATIONS = 100
CONVERGENCE_THRESHOLD = 0.0001
DEFAULT_PERCENTILE = 0.1  # top 10%

FOLLOW_TRUST = 0.5
MUTUAL_TRUST = 0.8
FOLLOWER_TRUST = 0.3
MENTION_BONUS = 0.1
MAX_MENTION_BONUS = 0.2


@dataclass(frozen=True)
class TrustRelationship:
    from_id: str
    to_id: str
    trust: float      # -1 (distrust) .. 1 (trust)
    weight: float = 1.0

    @property
    def value(self) -> float:
        return self.trust * self.weight


@dataclass
class SocialGraphNode:
    id: str
    trust_score: float = 0.0
    incoming_trust: List[TrustRelationship] = field(default_factory=list)
    outgoing_trust: List[TrustRelationship] = field(default_factory=list)


# =============================================
# EIGENTRUST
# =============================================

def _local_trust_matrix(nodes: Sequence[SocialGraphNode]) -> Dict[Tuple[str, str], float]:
    matrix: Dict[Tuple[str, str], float] = {}
    for node in nodes:
        outgoing: Dict[str, float] = {}
        for rel in node.outgoing_trust:
            outgoing[rel.to_id] = outgoing.get(rel.to_id, 0.0) + rel.value

        total_positive = sum(max(0.0, v) for v in outgoing.values())
        if total_positive <= 0:
            # Row stays all-zero: this node propagates nothing.
            continue
        for target, value in outgoing.items():
            if value > 0:
                matrix[(node.id, target)] = value / total_positive
    return matrix


def calculate_eigentrust(
    nodes: Sequence[SocialGraphNode],
    max_iterations: int = MAX_ITERATIONS,
    convergence_threshold: float = CONVERGENCE_THRESHOLD,
) -> Dict[str, float]:
    """
    Global trust per node id, summing to 1.

    When every path leaks out of the graph (all scores collapse to zero)
    the uniform prior is returned instead, so a single node scores 1.0.
    """
    if not nodes:
        return {}

    n = len(nodes)
    scores = {node.id: 1.0 / n for node in nodes}
    matrix = _local_trust_matrix(nodes)

    # Incoming sources, deduplicated per node.
    sources: Dict[str, List[str]] = {
        node.id: list(dict.fromkeys(rel.from_id for rel in node.incoming_trust))
        for node in nodes
    }

    iterations = 0
    converged = False
    for iterations in range(1, max_iterations + 1):
        new_scores: Dict[str, float] = {}
        max_change = 0.0
        for node in nodes:
            new_score = 0.0
            for src in sources[node.id]:
                new_score += matrix.get((src, node.id), 0.0) * scores.get(src, 0.0)
            new_scores[node.id] = new_score
            max_change = max(max_change, abs(new_score - scores[node.id]))
        scores = new_scores
        if max_change < convergence_threshold:
            converged = True
            break

    total = sum(scores.values())
    if total > 0:
        scores = {k: v / total for k, v in scores.items()}
    else:
        scores = {k: 1.0 / n for k in scores}

    logger.debug("eigentrust_complete", nodes=n, iterations=iterations, converged=converged)
    return scores


# =============================================
# PERCENTILE SCORING
# =============================================

def calculate_social_graph_score(
    trust_scores: Mapping[str, float],
    target_id: str,
    percentile: float = DEFAULT_PERCENTILE,
) -> int:
    """
    Map a node's trust to 0-100.

    At or above the percentile threshold: 80..100, interpolated up to the top score.
    Below it: 0..80, proportional to the threshold score. The curve is
    discontinuous at the boundary; the top bracket is rewarded on purpose.
    """
    if not trust_scores:
        return 0

    target = trust_scores.get(target_id, 0.0)
    ranked = sorted(trust_scores.values(), reverse=True)
    threshold_index = int(len(ranked) * percentile)
    threshold = ranked[threshold_index] if threshold_index < len(ranked) else 0.0

    if target >= threshold:
        top = ranked[0]
        if top == threshold:
            return 100
        normalized = (target - threshold) / (top - threshold)
        return round_half_up(80 + normalized * 20)

    return round_half_up(target / threshold * 80)


# =============================================
# GRAPH CONSTRUCTION
# =============================================

def farcaster_node_id(fid: int) -> str:
    return f"farcaster:{fid}"


def build_farcaster_social_graph(
    fid: int,
    follows: Sequence[int],
    followers: Sequence[int],
    mentions: Mapping[int, int],
) -> SocialGraphNode:
    """One user's node: follows become outgoing trust, followers incoming trust."""
    node_id = farcaster_node_id(fid)
    follower_set = set(followers)
    follow_set = set(follows)

    outgoing = []
    for followed in follows:
        base = MUTUAL_TRUST if followed in follower_set else FOLLOW_TRUST
        bonus = min(MAX_MENTION_BONUS, mentions.get(followed, 0) * MENTION_BONUS)
        outgoing.append(TrustRelationship(
            from_id=node_id,
            to_id=farcaster_node_id(followed),
            trust=min(1.0, base + bonus),
        ))

    incoming = []
    for follower in followers:
        incoming.append(TrustRelationship(
            from_id=farcaster_node_id(follower),
            to_id=node_id,
            trust=MUTUAL_TRUST if follower in follow_set else FOLLOWER_TRUST,
        ))

    return SocialGraphNode(id=node_id, incoming_trust=incoming, outgoing_trust=outgoing)


def build_ego_network(center: SocialGraphNode) -> List[SocialGraphNode]:
    """
    Expand a single node into its ego network: the center plus one node per
    neighbor, each carrying the mirror of the center's edges with it.
    """
    neighbors: Dict[str, SocialGraphNode] = {}

    def _neighbor(node_id: str) -> SocialGraphNode:
        if node_id not in neighbors:
            neighbors[node_id] = SocialGraphNode(id=node_id)
        return neighbors[node_id]

    for rel in center.outgoing_trust:
        if rel.to_id != center.id:
            _neighbor(rel.to_id).incoming_trust.append(rel)
    for rel in center.incoming_trust:
        if rel.from_id != center.id:
            _neighbor(rel.from_id).outgoing_trust.append(rel)

    return [center] + list(neighbors.values())
