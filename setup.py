import setuptools

setuptools.setup(
    name='adanuts',
    version='0.1.0',
    description=(
        'Adaptive Hamiltonian Monte Carlo and No-U-Turn sampler with '
        'dual averaging step size and windowed metric adaptation'
    ),
    long_description=(
        'Adanuts is a Python package providing an adaptive No-U-Turn sampler '
        'for approximate inference in differentiable probabilistic models, '
        'with the integrator step size tuned by dual averaging and a '
        'diagonal or dense metric estimated over growing windows during '
        'warm up.'
    ),
    packages=['adanuts'],
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Programming Language :: Python :: 3',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
        'Topic :: Scientific/Engineering',
        'Intended Audience :: Science/Research',
        'Intended Audience :: Developers'
    ],
    keywords='inference sampling MCMC HMC NUTS',
    license='MIT',
    install_requires=['numpy>=1.17', 'scipy>=1.1'],
    python_requires='>=3.7',
    extras_require={
        'autodiff':  ['autograd>=1.3', 'multiprocess>=0.70'],
        'test': ['pytest>=6.0']
    }
)
