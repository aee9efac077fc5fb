[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cryomotion"
version = "0.1.0"
description = "Frame integration, frame grouping, EER decoding, CTF modelling and input-folder queuing for cryo-EM movie processing"
requires-python = ">=3.10"
keywords = ["cryo-em", "eer", "ctf", "frame-integration", "electron-microscopy"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Processing",
]
dependencies = [
    "numpy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["cryomotion"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
