# -*- coding: utf-8 -*-
""" Adaptive Hamiltonian Monte Carlo / No-U-Turn sampling core. """

__license__ = 'MIT'

import adanuts.adapters
import adanuts.config
import adanuts.errors
import adanuts.hamiltonian
import adanuts.integrators
import adanuts.metrics
import adanuts.models
import adanuts.progressbars
import adanuts.samplers
import adanuts.stagers
import adanuts.states
import adanuts.transitions
import adanuts.utils
import adanuts.writers
