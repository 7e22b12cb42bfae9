"""Accepted source keys for each canonical conclusion-contract field, in priority order."""

from __future__ import annotations

CONTRACT_ALIASES: dict[str, dict[str, tuple[str, ...]]] = {
    "root": {
        "conclusions": ("conclusion", "conclusions"),
        "clusters": ("clusters",),
        "evidence_chain": ("evidence_chain", "evidenceChain"),
        "uncertainties": ("uncertainties",),
        "next_steps": ("next_steps", "nextSteps"),
        "metadata": ("metadata",),
        "scene_id": ("sceneId", "scene_id"),
        "cluster_policy": ("clusterPolicy", "cluster_policy"),
        "confidence": ("confidencePercent", "confidence"),
        "rounds": ("rounds",),
    },
    "metadata": {
        "scene_id": ("sceneId", "scene_id"),
        "cluster_policy": ("clusterPolicy", "cluster_policy"),
        "max_clusters": ("maxClusters", "max_clusters"),
        "confidence": ("confidencePercent", "confidence"),
        "rounds": ("rounds",),
    },
    "cluster_policy": {
        "max_clusters": ("maxClusters", "max_clusters"),
    },
    "conclusion": {
        "id": ("id", "conclusionId", "conclusion_id"),
        "statement": ("statement",),
        "trigger": ("trigger",),
        "supply": ("supply",),
        "amplification": ("amplification",),
        "confidence": ("confidencePercent", "confidence"),
    },
    "cluster": {
        "cluster": ("cluster",),
        "description": ("description",),
        "frames": ("frames",),
        "percentage": ("percentage",),
        "frame_refs": ("frameRefs", "frame_refs", "frameIds", "frame_ids"),
        "omitted_frames": ("omittedFrameRefs", "omitted_frame_refs", "omittedFrames", "omitted_frames"),
    },
    "evidence": {
        "conclusion_id": ("conclusionId", "conclusion_id", "conclusion"),
        "evidence": ("evidence",),
        "text": ("text",),
        "statement": ("statement",),
        "data": ("data",),
    },
}


def aliases(section: str, field_name: str) -> tuple[str, ...]:
    """Candidate keys for one canonical field; unknown names alias to themselves."""
    return CONTRACT_ALIASES.get(section, {}).get(field_name, (field_name,))
