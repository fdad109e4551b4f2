"""API router subpackage for the spectral tile service.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.

Submodules:
    - tiles: True-color XYZ tiles and the shared tile response helpers.
    - spectral: Band-algebra tiles, the spectral index catalogue and the
      colormap list.
    - datasets: Available datasets and the dataset cache status.

Routers are grouped by feature so that each can be tested independently
with FastAPI's TestClient.
"""
