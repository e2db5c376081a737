from setuptools import setup, find_packages

setup(
    name='joinkeeper',
    version='0.1.0',
    packages=find_packages(exclude=['joinkeeper.tests']),
    include_package_data=True,
    install_requires=[
        'typer',
        'fastapi',
        'uvicorn',
        'kubernetes',
        'python-dotenv',
        'pydantic>=2',
        'PyYAML',
        'kopf',
        'pydantic-settings',
        'semver',
    ],
    extras_require={
        'test': [
            'pytest',
            'httpx',
        ],
    },
    entry_points={
        'console_scripts': [
            'joinkeeper=joinkeeper.cli:app'
        ]
    },
    author='Your Name',
    description='Join token and control plane status controllers for hosted k0s clusters',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.8',
)
