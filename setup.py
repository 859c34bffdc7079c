import setuptools


setuptools.setup(
    name="pb_gmm",
    version="0.1.0",

    description="Distributed EM for Gaussian mixture models.",
    long_description=open('README.md', encoding='utf-8').read(),
    long_description_content_type='text/markdown',

    packages=setuptools.find_packages(exclude=['tests', 'tests.*']),

    python_requires='>=3.8',
    install_requires=[
        'numpy',
        'scikit-learn',
        'joblib',
        'cached_property',
    ],

    extras_require={
        'spark': [
            'pyspark',
        ],
        'all': [
            'pyspark',
            'scipy',
            'pytest',
            'parameterized',
        ]
    },

    classifiers=[
        'Programming Language :: Python :: 3',
    ],
)
