"""Surface Point-Cloud Sampler: fuzzy point skins for assembled meshes."""

from .sampler import sample_skin, apply_point_skin, vertex_point_cloud, area_proxy, allocate_budgets

__all__ = ["sample_skin", "apply_point_skin", "vertex_point_cloud", "area_proxy", "allocate_budgets"]
