[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "canbench"
version = "0.1.0"
description = "CAN bus bench tools: bit-timing calculator, bus-load monitor, full-duplex tester, gateway rule manager and BCM socket server"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "can",
    "canbus",
    "socketcan",
    "bit-timing",
    "busload",
    "gateway",
    "broadcast-manager",
    "automotive",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems :: Controller Area Network (CAN)",
    "Topic :: System :: Networking :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
can-calc-bit-timing = "canbench.bittiming:main"
canbusload = "canbench.busload:main"
canfdtest = "canbench.fdtest:main"
cangw = "canbench.gateway:main"
bcmserver = "canbench.bcmserver:main"

[tool.hatch.build.targets.wheel]
packages = ["canbench"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
