"""auth/ -- Authentication and authorization package for Marquee.

Layer rule: auth/ imports only stdlib + third-party libraries + core/.
It does NOT import from api/ or movies/.
api/ imports from auth/, not the other way around.
"""
