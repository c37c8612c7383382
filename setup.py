from setuptools import setup, find_packages

setup(
    name='nodeprep',
    version='0.1.0',
    packages=find_packages(exclude=['nodeprep.tests']),
    include_package_data=True,
    package_data={
        'nodeprep.modules.provision': ['templates/*.j2'],
    },
    install_requires=[
        'typer[all]',
        'pydantic>=2',
        'pydantic-settings>=2.0',
        'PyYAML',
        'python-dotenv',
        'requests',
        'tenacity',
        'Jinja2',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'nodeprep=nodeprep.cli:app'
        ]
    },
    description='Provision Ubuntu hosts with containerd and the Kubernetes tools',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: POSIX :: Linux',
    ],
    python_requires='>=3.8',
)
