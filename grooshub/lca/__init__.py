# =============================================================================
# LCA Package — Building Life-Cycle Assessment
# =============================================================================
#   - constants.py: transport factors, lifespans, MPG limits, energy factors
#   - calculator.py: pure per-phase GWP calculation (A1-A3, A4, A5, B4, C, D)
#   - service.py: ORM loading, result caching and snapshot creation
# =============================================================================
