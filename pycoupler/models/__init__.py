"""
Bundled component models implementing the coupler's component-model API:
a single-layer column atmosphere, a bucket land, a slab ocean, and two sea-ice
variants (prescribed thermodynamic slab, Eisenman-Zhang enthalpy model).
"""
