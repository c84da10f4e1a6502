from setuptools import setup, find_namespace_packages

setup(
    name="experiment-attribution",
    version="1.0.0",
    packages=find_namespace_packages(include=["src.attribution", "src.attribution.*"]),
    python_requires=">=3.8",
    install_requires=[
        "pandas>=2.0.0",
        "numpy>=1.21.0",
        "pyarrow>=10.0.0",
        "joblib>=1.2.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
        "airflow": ["apache-airflow>=2.4"],
    },
)
