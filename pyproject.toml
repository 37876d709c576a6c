[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "forseti"
version = "0.1.0"
description = "Real-time vehicle locations and vehicle occupancies for public transport, served over HTTP"
requires-python = ">=3.10"
keywords = ["gtfs-rt", "public transport", "vehicle locations", "occupancy", "navitia", "flask"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Framework :: Flask",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
]
dependencies = [
    "flask",
    "requests",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["forseti"]

[tool.pytest.ini_options]
addopts = "-ra"
