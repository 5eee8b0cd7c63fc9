from setuptools import setup, find_packages
setup(
    name = "libmarshal",
    version = "0.1.0.dev1",
    description = "Object-graph marshalling library",
    author = "Various Developers",
    packages = find_packages(exclude=['tests']),
    install_requires = [
        'attrs',
        ],
    extras_require = {
        'test': ['pytest'],
        },
    python_requires='>=3.8',
    )
