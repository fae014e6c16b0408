from setuptools import setup

setup(
    name='tree-statistics',
    version='1.0',
    py_modules=[
        'binning',
        'grad_hess',
        'leaf_statistics',
        'model',
        'oblivious_tree',
        'tree_statistics',
    ],
    description='Per-tree leaf estimation statistics for document importance in boosted oblivious trees',
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    python_requires='>=3.10',
    install_requires=['numpy'],
    extras_require={'test': ['pytest']},
)
