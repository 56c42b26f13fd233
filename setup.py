from setuptools import setup, find_packages

setup(
    name="TherapistSim",
    version="0.1.0",
    packages=find_packages(include=["therapistsim", "therapistsim.*"]),
    install_requires=[
        "numpy",
        "pandas",
        "matplotlib",
        "scipy",
        "joblib>=1.3",
        "tqdm",
    ],
    extras_require={
        "test": [
            "pytest",
            "statsmodels",
        ],
    },
    python_requires=">=3.9",
    description="Monte Carlo studies of therapist effects in clustered psychotherapy trials",
)
